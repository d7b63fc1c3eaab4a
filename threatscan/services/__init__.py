"""Event bus and outbound notification integrations."""
