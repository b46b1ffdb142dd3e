"""OpenFinancing — investment and asset-issuance engine for crowdfunded infrastructure."""

__version__ = "0.1.0"
