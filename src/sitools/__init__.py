"""ScanImage companion tools: monitor blanking, auxiliary analog recording and frame-time logging."""

__version__ = "0.1.0"
