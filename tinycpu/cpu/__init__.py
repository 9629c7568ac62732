from .regs import CPU, BusTrace, REGISTER_NAMES, IDLE_BUS

__all__ = ['CPU', 'BusTrace', 'REGISTER_NAMES', 'IDLE_BUS']
