"""Approval-gated provisioning of lab VMs through terraform."""

__version__ = "0.1.0"
