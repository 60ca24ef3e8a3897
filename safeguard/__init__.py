"""SafeGuard SOS dispatch and live-location relay service."""
