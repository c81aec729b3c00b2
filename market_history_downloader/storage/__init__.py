"""
Storage Package

Writer sinks for downloaded ticks and bars.
"""

from .data_writer import DataWriter, LocalDataWriter, GCSDataWriter, create_writer

__all__ = [
    'DataWriter',
    'LocalDataWriter',
    'GCSDataWriter',
    'create_writer'
]
