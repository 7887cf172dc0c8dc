"""
Apps package - deployable services.

- vault_proxy: authorization and lifecycle proxy in front of HashiCorp Vault
"""
