"""
System utilities for logging and diagnostics

This module provides the logger setup and the system state snapshot used by
the shutdown components when they report what the process looked like at
the moment shutdown started or was forced.
"""

import logging
import sys
import threading
from datetime import datetime

import psutil


class MicrosecondFormatter(logging.Formatter):
    """Custom formatter that provides microsecond precision timestamps"""
    def formatTime(self, record, datefmt=None):
        dt = datetime.fromtimestamp(record.created)
        return dt.strftime('%Y-%m-%d %H:%M:%S.%f')[:-3]  # Keep 3 decimal places (milliseconds)


def setup_shutdown_logger(name='graceful_shutdown', level=logging.INFO, log_file=None):
    """Setup the shutdown logger with a console handler and an optional file handler"""
    logger = logging.getLogger(name)
    logger.setLevel(level)

    # Prevent duplicate handlers
    if logger.handlers:
        logger.handlers.clear()

    console_handler = logging.StreamHandler(sys.stdout)
    console_handler.setLevel(level)
    console_handler.setFormatter(MicrosecondFormatter('%(asctime)s [%(levelname)s] %(message)s'))
    logger.addHandler(console_handler)

    if log_file:
        file_handler = logging.FileHandler(log_file)
        file_handler.setLevel(logging.DEBUG)
        file_handler.setFormatter(MicrosecondFormatter(
            '%(asctime)s [%(levelname)8s] %(name)s.%(funcName)s:%(lineno)d - %(message)s'
        ))
        logger.addHandler(file_handler)
        logger.debug(f"Shutdown log: {log_file}")

    logger.debug(f"Log level set to: {logging.getLevelName(level)}")
    return logger


def get_system_state():
    """Get process state information as a dictionary"""
    try:
        proc = psutil.Process()
        memory_info = proc.memory_info()

        return {
            'process': {
                'pid': proc.pid,
                'status': proc.status(),
                'num_threads': proc.num_threads(),
                'open_files_count': len(proc.open_files()),
                'connections_count': len(proc.net_connections())
            },
            'memory': {
                'rss_mb': memory_info.rss / 1024 / 1024,
                'vms_mb': memory_info.vms / 1024 / 1024
            },
            'threads': {
                'count': threading.active_count(),
                'names': [thread.name for thread in threading.enumerate()]
            },
            'timestamp': datetime.now().isoformat()
        }

    except Exception as e:
        return {
            'error': str(e),
            'timestamp': datetime.now().isoformat()
        }


def log_system_state(logger, phase):
    """Log process state at debug level, tagged with the shutdown phase"""
    if not logger.isEnabledFor(logging.DEBUG):
        return

    start_time = datetime.now()
    logger.debug(f"=== SYSTEM STATE: {phase} (at {start_time.strftime('%H:%M:%S.%f')[:-3]}) ===")

    system_state = get_system_state()
    if 'error' in system_state:
        logger.debug(f"Could not collect system state: {system_state['error']}")
        return

    proc_info = system_state['process']
    logger.debug(f"PID: {proc_info['pid']}, Status: {proc_info['status']}")
    logger.debug(f"Memory: RSS={system_state['memory']['rss_mb']:.1f}MB, VMS={system_state['memory']['vms_mb']:.1f}MB")
    logger.debug(f"Open files: {proc_info['open_files_count']}")
    logger.debug(f"Connections: {proc_info['connections_count']}")
    logger.debug(f"Active Python threads: {system_state['threads']['count']} {system_state['threads']['names']}")

    duration = (datetime.now() - start_time).total_seconds() * 1000  # milliseconds
    logger.debug(f"=== END SYSTEM STATE: {phase} (duration: {duration:.2f}ms) ===")
