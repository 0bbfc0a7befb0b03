from mcp_chat.cli import main

main()
