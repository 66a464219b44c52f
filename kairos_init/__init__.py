"""
kairos-init — provisioning plan resolver for Kairos appliance images.

Detects the running OS, resolves the package matrices for it and
composes the phase-ordered stage plan that turns a minimal OS image
into a bootable Kairos image.
"""

__version__ = "0.1.0"
