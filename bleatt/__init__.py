"""Bluetooth Low Energy Attribute Protocol layer and remote GATT discovery over an abstract HCI transport."""

__version__ = "0.1.0"