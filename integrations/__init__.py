"""
Outbound notification integrations.
"""
