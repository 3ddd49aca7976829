"""Call-session orchestration core.

Tracks in-flight calls, drives their lifecycle from protocol events, bills
answered time against prepaid credit and fails over between outbound trunks.
"""
