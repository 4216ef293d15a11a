"""HTTP surface — status routes and the app factory."""
