"""
Handlers package - Contains all Kopf event handlers.

- stack.py: Stack install, re-check and uninstall
"""
