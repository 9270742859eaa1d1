"""Kernel: domain models, ports and the orchestration core.

The kernel never touches the host directly; shell commands, artifacts and run
history go through the ports in :mod:`stagerun.kernel.ports`, implemented by
:mod:`stagerun.drivers`.
"""
