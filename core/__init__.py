"""
Feishu Gateway core

- gateway: channel plugins, inbound sessions, outbound delivery, manager
"""
