import asyncio
import os

from mcpx import McpXClient, PaymentRequiredError


async def authorize_payment(accepts) -> str:
    # Wallet integration goes here: sign an x402 payload for one of the
    # accepted requirements and return it base64 encoded.
    for requirement in accepts:
        print(f"Server accepts {requirement.max_amount_required} of {requirement.asset} "
              f"on {requirement.network} to {requirement.pay_to}")
    return os.getenv("X402_PAYMENT_HEADER")


def show_settlement(info):
    print(f"Settled {info.tool_name}: tx={info.decoded.transaction} network={info.decoded.network}")


async def main():
    server_url = os.getenv("MCP_SERVER_URL", "http://localhost:8000/mcp")

    async with McpXClient(server_url, payment_handler=authorize_payment, on_settlement=show_settlement) as client:
        for tool in await client.list_tools():
            print(f"- {tool['name']}: {tool.get('_meta', {}).get('payment', 'free')}")

        result = await client.call_tool("echo", {"message": "hello"})
        print(result["content"][0]["text"])

        try:
            result = await client.call_tool("premium_echo", {"message": "hello"})
            print(result["content"][0]["text"])
        except PaymentRequiredError as e:
            print(f"Payment required: {e.error}")


if __name__ == "__main__":
    asyncio.run(main())
