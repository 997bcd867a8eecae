from __future__ import annotations

import time

from eth_account import Account

from xswap_client import SwapLedgerClient, new_swap, pack_timelocks, sign_order

NATIVE = "0x" + "00" * 20
TOKEN_A = "0x" + "aa" * 20
TOKEN_B = "0x" + "bb" * 20


def main() -> int:
    # Assumes two ledgers are already running locally, e.g.:
    #   SWAPLEDGER_CHAIN_ID=1 SWAPLEDGER_PORT=3000 SWAPLEDGER_DATABASE_URL=sqlite:///src.db python -m swapledger
    #   SWAPLEDGER_CHAIN_ID=56 SWAPLEDGER_PORT=3001 SWAPLEDGER_DATABASE_URL=sqlite:///dst.db python -m swapledger
    src_url = "http://127.0.0.1:3000"
    dst_url = "http://127.0.0.1:3001"

    src_info = SwapLedgerClient(src_url).health()
    dst_info = SwapLedgerClient(dst_url).health()

    maker_key = Account.create()
    resolver_key = Account.create()

    maker_src = SwapLedgerClient(src_url)
    maker_src.register_account(address=maker_key.address, label="maker")
    maker_src.deposit(asset=TOKEN_A, amount=1000)
    maker_dst = SwapLedgerClient(dst_url)
    maker_dst.register_account(address=maker_key.address, label="maker")

    resolver_src = SwapLedgerClient(src_url)
    resolver_src.register_account(address=resolver_key.address, label="resolver")
    resolver_src.deposit(asset=NATIVE, amount=10)
    resolver_dst = SwapLedgerClient(dst_url)
    resolver_dst.register_account(address=resolver_key.address, label="resolver")
    resolver_dst.deposit(asset=NATIVE, amount=5)
    resolver_dst.deposit(asset=TOKEN_B, amount=500)

    # Maker: keep the secret, publish the hashlock with a signed order.
    swap = new_swap()
    order = {
        "salt": 1,
        "maker": maker_key.address,
        "maker_asset": TOKEN_A,
        "taker_asset": TOKEN_B,
        "making_amount": 1000,
        "taking_amount": 500,
    }
    signature = sign_order(
        order,
        maker_key.key,
        chain_id=src_info["chain_id"],
        verifying_contract=src_info["settlement_address"],
    )
    offsets = {
        "src_withdrawal": 10,
        "src_public_withdrawal": 60,
        "src_cancellation": 180,
        "src_public_cancellation": 360,
        "dst_withdrawal": 10,
        "dst_public_withdrawal": 60,
        "dst_cancellation": 90,
    }

    # Resolver: fill on the source ledger, then mirror the escrow on the destination ledger.
    fill = resolver_src.fill_order(
        order=order,
        signature=signature,
        fill_amount=1000,
        extension={
            "hashlock": swap.hashlock,
            "dst_chain_id": dst_info["chain_id"],
            "dst_token": TOKEN_B,
            "src_safety_deposit": 10,
            "dst_safety_deposit": 5,
            "timelocks": offsets,
        },
        value=10,
    )
    src_escrow = fill["escrow"]
    complement = fill["dst_complement"]
    swap.order_hash = fill["order_hash"]
    swap.src_escrow = src_escrow["address"]
    swap.src_created_at = src_escrow["created_at"]
    print("Source escrow:", src_escrow["address"], src_escrow["balances"])

    dst_immutables = {
        "order_hash": fill["order_hash"],
        "hashlock": swap.hashlock,
        "maker": complement["maker"],
        "taker": resolver_key.address,
        "token": complement["token"],
        "amount": complement["amount"],
        "safety_deposit": complement["safety_deposit"],
        "timelocks": pack_timelocks(offsets),
    }
    dst_escrow = resolver_dst.create_dst_escrow(
        immutables=dst_immutables,
        src_cancellation_timestamp=src_escrow["schedule"]["src_cancellation"],
        value=complement["safety_deposit"],
    )
    swap.dst_escrow = dst_escrow["address"]
    swap.dst_created_at = dst_escrow["created_at"]
    print("Destination escrow:", dst_escrow["address"], dst_escrow["balances"])

    # Both escrows are funded: the maker hands the secret to the resolver after finality.
    time.sleep(offsets["src_withdrawal"] + 1)
    resolver_dst.withdraw(address=dst_escrow["address"], secret=swap.secret, immutables=dst_escrow["immutables"])
    revealed = resolver_dst.get_secret(hashlock=swap.hashlock)
    resolver_src.withdraw(address=src_escrow["address"], secret=revealed["secret"], immutables=src_escrow["immutables"])

    print("Maker on destination:", maker_dst.balances(owner=maker_key.address))
    print("Resolver on source:", resolver_src.balances(owner=resolver_key.address))
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
