"""
Stack Manager - A Kubernetes operator that installs and uninstalls Stacks.

A Stack is a packaged control plane extension. Installing one means:
- Provisioning a least-privilege service identity for its controller
- Claiming shared CustomResourceDefinitions with reference-counted labels
- Publishing aggregated admin/edit/view persona roles
- Deploying the Stack's own controller, optionally into a separate host cluster
"""

__version__ = "0.1.0"
