"""
x402 paygate.

Withholds a protected resource behind an HTTP 402 challenge until the caller
signs the challenge nonce with a Solana (Phantom) or EVM (MetaMask) wallet.
"""

__version__ = "0.1.0"
