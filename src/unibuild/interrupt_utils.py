"""Ctrl-C handling for code running on build lanes.

A KeyboardInterrupt raised on a lane thread would otherwise only end that
thread. handle_keyboard_interrupt_properly() forwards it to the main thread
so the whole build pass stops and the worker pool gets torn down.
"""

import _thread


def handle_keyboard_interrupt_properly(ke: KeyboardInterrupt) -> None:
    """Interrupt the main thread, then re-raise on the current one.

    Usage:
        try:
            build_step(source, lane)
        except KeyboardInterrupt as ke:
            handle_keyboard_interrupt_properly(ke)

    Args:
        ke: The KeyboardInterrupt caught on the lane

    Raises:
        KeyboardInterrupt: Always
    """
    _thread.interrupt_main()
    raise ke
