"""pvesandbox - Proxmox VE backend for short-lived sandbox VMs."""

__version__ = "0.1.0"
