"""FullDoH package: a local DNS proxy that forwards UDP/TCP queries over DNS-over-HTTPS."""
