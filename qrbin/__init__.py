"""QR Bin API: bins, photos, trash retention and backup/restore."""
