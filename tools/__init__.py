"""MCP tool registration for the Caption MCP Server"""
