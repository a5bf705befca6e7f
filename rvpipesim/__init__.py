"""A pipelined RISC-V simulator with branch prediction, cache modelling and trace tools."""

__version__ = "0.1.0"