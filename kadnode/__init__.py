"""Helpers for peer-to-peer name resolution over a Kademlia DHT."""

__version__ = "2.4.0"