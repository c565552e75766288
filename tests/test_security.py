"""
Test cases for address validation and payment layer configuration
"""

import logging

import pytest
from web3 import Web3

from mcpx.x402.config import load_x402_config, parse_tool_overrides, reload_x402_config
from mcpx.x402.errors import ConfigurationError
from mcpx.x402.security import AddressValidator, validate_production_config


# =============================================================================
# ADDRESS VALIDATION TESTS
# =============================================================================

def test_valid_evm_address():
    """Test validation of valid EVM address"""
    valid_address = "0x1234567890123456789012345678901234567890"
    assert AddressValidator.validate_evm_address(valid_address) == True


def test_invalid_evm_address_no_prefix():
    """Test rejection of EVM address without 0x prefix"""
    invalid_address = "1234567890123456789012345678901234567890"
    assert AddressValidator.validate_evm_address(invalid_address) == False


def test_invalid_evm_address_wrong_length():
    """Test rejection of EVM address with wrong length"""
    assert AddressValidator.validate_evm_address("0x12345") == False


def test_invalid_evm_address_non_hex():
    """Test rejection of EVM address with non-hex characters"""
    invalid_address = "0x123456789012345678901234567890123456789g"
    assert AddressValidator.validate_evm_address(invalid_address) == False


@pytest.mark.parametrize("address", [
    "EPjFWdd5AufqSSqeM2qN1xzybapC8G4wEGGkZwyTDt1v",
    "4zMMC9srt5Ri5X14GAgXhaHii3GnPAEERYPJgZJDncDU",
])
def test_valid_solana_address(address):
    """Test validation of valid Solana address"""
    assert AddressValidator.validate_solana_address(address) == True


def test_invalid_solana_address_too_short():
    """Test rejection of Solana address that's too short"""
    assert AddressValidator.validate_solana_address("short") == False


def test_invalid_solana_address_bad_alphabet():
    """Test rejection of Solana address with characters outside base58"""
    assert AddressValidator.validate_solana_address("0OIl" + "1" * 40) == False


def test_validate_address_by_network():
    """Test address family follows the network"""
    evm = "0x1234567890123456789012345678901234567890"
    svm = "EPjFWdd5AufqSSqeM2qN1xzybapC8G4wEGGkZwyTDt1v"

    assert AddressValidator.validate_address(evm, "base")
    assert not AddressValidator.validate_address(evm, "solana")
    assert AddressValidator.validate_address(svm, "solana-devnet")
    assert not AddressValidator.validate_address(svm, "polygon")


def test_address_normalization():
    """Test address normalization"""
    address = "  0xabcdefabcdefabcdefabcdefabcdefabcdefabcd  "
    normalized = AddressValidator.normalize_address(address, "base")
    assert normalized == Web3.to_checksum_address(address.strip())
    assert normalized.lower() == address.strip()

    solana = " 4zMMC9srt5Ri5X14GAgXhaHii3GnPAEERYPJgZJDncDU "
    assert AddressValidator.normalize_address(solana, "solana") == solana.strip()


def test_address_normalization_rejects_invalid():
    """Test normalization of an invalid address"""
    with pytest.raises(ConfigurationError):
        AddressValidator.normalize_address("0x1234", "base")


# =============================================================================
# PRODUCTION CONFIGURATION
# =============================================================================

def test_missing_pay_to_warns(monkeypatch, caplog):
    """Test warning when no default payTo is configured"""
    monkeypatch.setenv("ENVIRONMENT", "production")
    with caplog.at_level(logging.WARNING, logger="mcpx.x402.security"):
        validate_production_config(None)
    assert "No default payTo address configured" in caplog.text


def test_zero_address_is_critical(monkeypatch, caplog):
    """Test zero address payTo is flagged"""
    monkeypatch.setenv("ENVIRONMENT", "production")
    with caplog.at_level(logging.CRITICAL, logger="mcpx.x402.security"):
        validate_production_config("0x0000000000000000000000000000000000000000")
    assert "zero address" in caplog.text


def test_development_skips_checks(monkeypatch, caplog):
    """Test development environment is not checked"""
    monkeypatch.setenv("ENVIRONMENT", "development")
    with caplog.at_level(logging.DEBUG, logger="mcpx.x402.security"):
        validate_production_config(None)
    assert "payTo" not in caplog.text


# =============================================================================
# CONFIGURATION LOADING
# =============================================================================

def test_parse_tool_overrides():
    """Test per-tool override parsing"""
    overrides = parse_tool_overrides(
        "premium_echo:0xabc, secure_echo:https://facilitator.example/x402,broken,:empty"
    )
    assert overrides == {
        "premium_echo": "0xabc",
        "secure_echo": "https://facilitator.example/x402",
    }
    assert parse_tool_overrides("") == {}


def test_load_config_from_environment(monkeypatch):
    """Test environment variables are read"""
    monkeypatch.setenv("X402_PAY_TO_ADDRESS", "0x1234567890123456789012345678901234567890")
    monkeypatch.setenv("X402_FACILITATOR_URL", "https://facilitator.example")
    monkeypatch.setenv("X402_TOOL_PAY_TO", "premium_echo:0xabc")
    monkeypatch.setenv("X402_REQUIREMENT_CACHE_TTL", "30")
    monkeypatch.setenv("X402_ENABLED", "false")

    config = load_x402_config()
    assert config.default_pay_to == "0x1234567890123456789012345678901234567890"
    assert config.default_facilitator_url == "https://facilitator.example"
    assert config.tool_pay_to == {"premium_echo": "0xabc"}
    assert config.requirement_cache_ttl == 30.0
    assert config.enabled is False


def test_config_defaults(monkeypatch):
    """Test defaults with an empty environment"""
    for name in ("X402_PAY_TO_ADDRESS", "X402_FACILITATOR_URL", "X402_ENABLED",
                 "X402_REQUIREMENT_CACHE_TTL", "X402_SETTLEMENT_HISTORY"):
        monkeypatch.delenv(name, raising=False)

    config = reload_x402_config()
    assert config.default_pay_to is None
    assert config.default_facilitator_url == "https://x402.org/facilitator"
    assert config.requirement_cache_ttl == 60.0
    assert config.settlement_history == 100
    assert config.enabled is True
