"""Chain access for the BTMT contracts.

Network profiles, compiled artifacts, EIP-1559 fee data, and a web3
provider that deploys, calls and transacts with named signer accounts.
"""
