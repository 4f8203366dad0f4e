"""Remnawave VPN panel integration: API client, account links and sync."""
