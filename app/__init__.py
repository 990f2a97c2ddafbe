"""QRSeal HTTP service."""
