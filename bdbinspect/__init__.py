"""Inspect Berkeley DB object stores dumped from an MMO server."""
