"""
Consistency Fuzzer - Drive concurrent operations against a data store while
injecting faults, record the history and check it against a consistency model
"""

__version__ = "0.1.0"
