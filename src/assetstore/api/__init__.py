"""HTTP surface over a single AssetStore. Run with `python -m assetstore.api`."""
