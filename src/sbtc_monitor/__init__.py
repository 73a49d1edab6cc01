"""Confirmation monitor for sBTC and STX payments on Stacks."""

from .monitor import MonitorConfig, TransactionMonitor

__all__ = ["MonitorConfig", "TransactionMonitor"]
