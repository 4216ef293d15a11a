"""Health subsystem — probe engine, state cells, poll loops.

Submodules are imported directly (``pulsemon.health.engine`` etc.); the
probe registry depends on ``pulsemon.health.state``.
"""
