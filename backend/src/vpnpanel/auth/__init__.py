"""Authentication: users, passwords, JWT and Telegram WebApp login."""
