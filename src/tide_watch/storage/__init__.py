"""Persistent depth storage - one circular binary log per anchorage."""

from .depth_log import DepthLog, capacity_for_interval, log_file_name, RECORD_SIZE, HEADER_SIZE

__all__ = ['DepthLog', 'capacity_for_interval', 'log_file_name', 'RECORD_SIZE', 'HEADER_SIZE']
