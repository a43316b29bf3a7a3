"""MCP server exposing the mailbox cleaner to an MCP client over stdio.

Read operations (connect, scan, progress) are always available. Deletion
tools are only enabled when the server is started with
--enable-write-operations.
"""

import argparse
import asyncio
import json
import logging
import sys
from typing import Any, Awaitable, Callable, Dict, List, Optional

import mcp.server.stdio
from mcp import types
from mcp.server import NotificationOptions, Server
from mcp.server.models import InitializationOptions

from . import config
from .imap_service import ImapService
from .models import DateFilter, ImapConfig
from .report import format_sender_report

SERVER_NAME = "mailbox-cleaner"
SERVER_VERSION = "0.1.0"
TOOL_PREFIX = "mail-"

LOG_FORMAT = "%(asctime)s - %(levelname)s - %(funcName)s:%(lineno)d - %(message)s"

DATE_FILTER_PROPERTIES: Dict[str, Any] = {
    "filter_type": {
        "type": "string",
        "enum": ["all", "older_than_days", "older_than_months", "older_than_years", "date_range"],
        "description": "Which date filter to apply (defaults to 'all').",
    },
    "days": {"type": "integer", "description": "Age in days for 'older_than_days'."},
    "months": {"type": "integer", "description": "Age in months for 'older_than_months'."},
    "years": {"type": "integer", "description": "Age in years for 'older_than_years'."},
    "start_date": {"type": "string", "description": "First day (YYYY-MM-DD) for 'date_range'."},
    "end_date": {"type": "string", "description": "Last day (YYYY-MM-DD) for 'date_range', inclusive."},
}

TOOL_DEFINITIONS: Dict[str, Dict[str, Any]] = {
    "connect": {
        "description": "Connect to an IMAP server and open the mailbox. Omitted values come from the environment.",
        "properties": {
            "server": {"type": "string", "description": "IMAP server hostname."},
            "port": {"type": "integer", "description": "IMAP port (993 for SSL)."},
            "username": {"type": "string", "description": "Login name, usually the email address."},
            "password": {"type": "string", "description": "Password or app-specific password."},
            "use_ssl": {"type": "boolean", "description": "Use SSL/TLS (default true)."},
            "mailbox": {"type": "string", "description": "Mailbox to open (default INBOX)."},
        },
    },
    "disconnect": {
        "description": "Log out and close the IMAP connection.",
        "properties": {},
    },
    "senders": {
        "description": "Scan the mailbox and summarize it by sender, largest senders first.",
        "properties": {
            **DATE_FILTER_PROPERTIES,
            "limit": {"type": "integer", "description": "Maximum number of senders to return (default 50)."},
            "format": {
                "type": "string",
                "enum": ["records", "csv", "json"],
                "description": "Output format (default 'records').",
            },
        },
    },
    "progress": {
        "description": "Report progress of the current or last mailbox scan.",
        "properties": {},
    },
    "cancel": {
        "description": "Cancel a running mailbox scan at the next batch boundary.",
        "properties": {},
    },
    "delete": {
        "description": "Permanently delete emails by UID.",
        "properties": {
            "email_uids": {"type": "array", "items": {"type": "integer"}, "description": "UIDs to delete."},
        },
        "required": ["email_uids"],
    },
    "delete-sender": {
        "description": "Permanently delete all emails from a sender, optionally restricted by date.",
        "properties": {
            "sender_email": {"type": "string", "description": "Sender address to match in the From header."},
            **DATE_FILTER_PROPERTIES,
        },
        "required": ["sender_email"],
    },
}

WRITE_TOOLS = {"delete", "delete-sender"}


def date_filter_from_arguments(
    filter_type: Optional[str] = None,
    days: Optional[int] = None,
    months: Optional[int] = None,
    years: Optional[int] = None,
    start_date: Optional[str] = None,
    end_date: Optional[str] = None,
) -> Optional[DateFilter]:
    """Build a DateFilter from flat tool arguments, or None for "all"."""
    if not filter_type or filter_type == "all":
        return None
    return DateFilter.from_dict({
        "filter_type": filter_type,
        "days": days,
        "months": months,
        "years": years,
        "start_date": start_date,
        "end_date": end_date,
    })


class MailboxCleanerServer:
    """MCP tool server wrapping one ImapService."""

    def __init__(self, service: Optional[ImapService] = None, enable_write_operations: bool = False) -> None:
        """Initialize the server.

        Args:
            service: Service to expose; a fresh ImapService when omitted
            enable_write_operations: Whether the delete tools may run
        """
        self.service = service or ImapService()
        self.write_operations_enabled = enable_write_operations
        self.server = Server(SERVER_NAME)
        self._handlers: Dict[str, Callable[..., Awaitable[Any]]] = {
            "connect": self.connect,
            "disconnect": self.disconnect,
            "senders": self.senders,
            "progress": self.progress,
            "cancel": self.cancel,
            "delete": self.delete,
            "delete-sender": self.delete_sender,
        }
        self._register_handlers()

    def list_tools(self) -> List[types.Tool]:
        tools = []
        for name, definition in TOOL_DEFINITIONS.items():
            input_schema: Dict[str, Any] = {"type": "object", "properties": definition["properties"]}
            if definition.get("required"):
                input_schema["required"] = definition["required"]
            tools.append(types.Tool(
                name=f"{TOOL_PREFIX}{name}",
                description=definition["description"],
                inputSchema=input_schema,
            ))
        return tools

    async def call_tool(self, name: str, arguments: Optional[Dict[str, Any]] = None) -> Any:
        """Dispatch a prefixed tool name to its handler.

        Raises:
            ValueError: If the tool is unknown
        """
        short_name = name[len(TOOL_PREFIX):] if name.startswith(TOOL_PREFIX) else name
        handler = self._handlers.get(short_name)
        if handler is None:
            raise ValueError(f"Unknown tool: {name}")
        if short_name in WRITE_TOOLS and not self.write_operations_enabled:
            return "Delete operations are disabled. Use --enable-write-operations flag to enable."
        return await handler(**(arguments or {}))

    def _register_handlers(self) -> None:
        """Register MCP protocol handlers."""

        @self.server.list_tools()
        async def handle_list_tools() -> List[types.Tool]:
            tools = self.list_tools()
            logging.info(f"Listed {len(tools)} tools")
            return tools

        @self.server.call_tool()
        async def handle_call_tool(name: str, arguments: Optional[Dict[str, Any]]) -> List[types.TextContent]:
            logging.info(f"Calling tool: {name}")
            try:
                result = await self.call_tool(name, arguments)
            except Exception as e:
                logging.error(f"Error executing tool {name}: {e}", exc_info=True)
                return [types.TextContent(type="text", text=f"Error: {e!s}")]

            if isinstance(result, str):
                return [types.TextContent(type="text", text=result)]
            return [types.TextContent(type="text", text=json.dumps(result, indent=2, default=str))]

    async def connect(
        self,
        server: Optional[str] = None,
        port: Optional[int] = None,
        username: Optional[str] = None,
        password: Optional[str] = None,
        use_ssl: Optional[bool] = None,
        mailbox: Optional[str] = None,
    ) -> str:
        defaults = ImapConfig.from_env()
        imap_config = ImapConfig(
            server=server or defaults.server,
            port=port or defaults.port,
            username=username or defaults.username,
            password=password or defaults.password,
            use_ssl=defaults.use_ssl if use_ssl is None else use_ssl,
            mailbox=mailbox or defaults.mailbox,
            timeout=defaults.timeout,
        )
        if not (imap_config.server and imap_config.username and imap_config.password):
            raise ValueError("Server, username, and password are required")

        if await self.service.connect(imap_config):
            return "Connected successfully to IMAP server"
        return "Failed to connect to IMAP server. Please check your credentials and server settings."

    async def disconnect(self) -> str:
        await self.service.disconnect()
        return "Disconnected from IMAP server"

    async def senders(
        self,
        filter_type: Optional[str] = None,
        days: Optional[int] = None,
        months: Optional[int] = None,
        years: Optional[int] = None,
        start_date: Optional[str] = None,
        end_date: Optional[str] = None,
        limit: Optional[int] = 50,
        format: str = "records",
    ) -> Dict[str, Any]:
        date_filter = date_filter_from_arguments(filter_type, days, months, years, start_date, end_date)
        groups = await self.service.get_emails_by_sender(date_filter)
        return format_sender_report(groups, limit=limit, format=format)

    async def progress(self) -> Dict[str, Any]:
        status = self.service.get_processing_status().to_dict()
        status["connected"] = self.service.is_connected
        return status

    async def cancel(self) -> str:
        self.service.cancel_processing()
        return "Cancellation requested; the scan stops at the next batch boundary."

    async def delete(self, email_uids: List[int]) -> str:
        if not email_uids:
            raise ValueError("Email UIDs are required for deletion")
        count = await self.service.delete_emails(email_uids)
        email_word = "email" if count == 1 else "emails"
        return f"Successfully permanently deleted {count} {email_word}."

    async def delete_sender(
        self,
        sender_email: str,
        filter_type: Optional[str] = None,
        days: Optional[int] = None,
        months: Optional[int] = None,
        years: Optional[int] = None,
        start_date: Optional[str] = None,
        end_date: Optional[str] = None,
    ) -> str:
        date_filter = date_filter_from_arguments(filter_type, days, months, years, start_date, end_date)
        if date_filter is None:
            count = await self.service.delete_emails_by_sender(sender_email)
        else:
            count = await self.service.delete_emails_by_sender_with_filter(sender_email, date_filter)
        email_word = "email" if count == 1 else "emails"
        return f"Successfully permanently deleted {count} {email_word} from {sender_email}."

    async def run(self) -> None:
        """Run the MCP server over stdio until the client disconnects."""
        logging.info(f"Starting {SERVER_NAME} v{SERVER_VERSION}")
        try:
            async with mcp.server.stdio.stdio_server() as (read_stream, write_stream):
                await self.server.run(
                    read_stream,
                    write_stream,
                    InitializationOptions(
                        server_name=SERVER_NAME,
                        server_version=SERVER_VERSION,
                        capabilities=self.server.get_capabilities(
                            notification_options=NotificationOptions(),
                            experimental_capabilities={},
                        ),
                    ),
                )
        finally:
            await self.service.disconnect()

    def describe_tools(self) -> None:
        """Print human-readable descriptions of all available tools."""
        print(f"\n{SERVER_NAME} v{SERVER_VERSION}")
        print("=" * 60)
        for tool in self.list_tools():
            print(f"\nTool: {tool.name}")
            print(f"  Description: {tool.description}")
            required = tool.inputSchema.get("required", [])
            for param_name, param_info in tool.inputSchema["properties"].items():
                marker = "(required)" if param_name in required else "(optional)"
                print(f"    - {param_name}: {param_info.get('type', 'any')} {marker}")


def parse_args(args: Optional[List[str]] = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(
        prog=SERVER_NAME,
        description=f"{SERVER_NAME} - MCP server for summarizing and cleaning an IMAP mailbox",
    )
    parser.add_argument(
        "--describe",
        action="store_true",
        help="Show available tools and their parameters",
    )
    parser.add_argument(
        "--enable-write-operations",
        action="store_true",
        help="Enable permanent deletion tools. By default only read operations are available.",
    )
    return parser.parse_args(args)


def configure_logging(level: str = config.LOG_LEVEL) -> None:
    logging.basicConfig(level=level, format=LOG_FORMAT)


def main(args: Optional[List[str]] = None) -> None:
    """Main entry point for the mailbox cleaner MCP server."""
    parsed_args = parse_args(args)
    configure_logging()

    server = MailboxCleanerServer(enable_write_operations=parsed_args.enable_write_operations)
    if parsed_args.describe:
        server.describe_tools()
        sys.exit(0)

    asyncio.run(server.run())


if __name__ == "__main__":
    main()
