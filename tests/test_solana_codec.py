"""Tests for Solana instruction encoding and PDA derivation."""

import hashlib
import struct

import base58
import pytest
from solders.pubkey import Pubkey

from conftest import SOLANA_ADDRESS
from gamewallet.codec import solana
from gamewallet.errors import InputError

PROGRAM_ID = "Fg6PaFpoGXkYsidMpWTK6W2BeZ7FEfcYkg476zPFsLnS"
MINT = "EPjFWdd5AufqSSqeM2qN1xzybapC8G4wEGGkZwyTDt1v"
BLOCKHASH = base58.b58encode(bytes(range(32))).decode()


class TestDiscriminator:
    """Tests for Anchor discriminators."""

    def test_known_value(self):
        """Test the discriminator of Anchor's default initialize method."""
        assert solana.discriminator("initialize").hex() == "afaf6d1f0d989bed"

    def test_matches_definition(self):
        """Test that discriminators are the first 8 bytes of sha256("global:<name>")."""
        expected = hashlib.sha256(b"global:deposit_spl").digest()[:8]
        assert solana.discriminator("deposit_spl") == expected
        assert solana.discriminator("deposit_spl") != solana.discriminator("withdraw_spl")


class TestBorsh:
    """Tests for the Borsh writer."""

    def test_integers_are_little_endian(self):
        """Test fixed-width integer encoding."""
        data = solana.BorshWriter().u8(1).u16(2).u32(3).u64(4).to_bytes()
        assert data == b"\x01" + b"\x02\x00" + b"\x03\x00\x00\x00" + b"\x04" + b"\x00" * 7

    def test_string_is_length_prefixed(self):
        """Test u32 length prefix on strings."""
        assert solana.BorshWriter().string("abc").to_bytes() == b"\x03\x00\x00\x00abc"

    def test_signed_and_bool(self):
        """Test i64 and bool encoding."""
        data = solana.BorshWriter().i64(-1).boolean(True).to_bytes()
        assert data == b"\xff" * 8 + b"\x01"

    @pytest.mark.parametrize("value", [-1, 2**64, "1", True])
    def test_u64_range(self, value):
        """Test that u64 rejects out of range or non-int values."""
        with pytest.raises(InputError):
            solana.BorshWriter().u64(value)

    def test_pubkey(self):
        """Test that pubkeys are written as their 32 raw bytes."""
        data = solana.BorshWriter().pubkey(SOLANA_ADDRESS).to_bytes()
        assert data == bytes(Pubkey.from_string(SOLANA_ADDRESS))


class TestPubkeys:
    """Tests for pubkey parsing."""

    def test_accepts_string_bytes_and_pubkey(self):
        """Test every accepted input form."""
        key = Pubkey.from_string(SOLANA_ADDRESS)
        assert solana.to_pubkey(SOLANA_ADDRESS) == key
        assert solana.to_pubkey(bytes(key)) == key
        assert solana.to_pubkey(key) is key

    @pytest.mark.parametrize("value", ["", "0OIl", "abc", b"\x01" * 31, 42])
    def test_rejects_invalid(self, value):
        """Test that malformed keys are an InputError."""
        with pytest.raises(InputError):
            solana.to_pubkey(value)


class TestProgramAddresses:
    """Cross-checks of PDA derivation against solders."""

    @pytest.mark.parametrize("seeds", [
        [b"config"],
        [b"vault"],
        [b"nonce", struct.pack("<Q", 7)],
        [b"", b"x" * 32],
    ])
    def test_find_program_address_matches_solders(self, seeds):
        """Test that our bump search lands on the same address and bump."""
        program = Pubkey.from_string(PROGRAM_ID)
        expected_address, expected_bump = Pubkey.find_program_address(seeds, program)

        address, bump = solana.find_program_address(seeds, PROGRAM_ID)
        assert address == expected_address
        assert bump == expected_bump

    def test_create_program_address_matches_solders(self):
        """Test direct derivation with a known-good bump."""
        program = Pubkey.from_string(PROGRAM_ID)
        _, bump = Pubkey.find_program_address([b"config"], program)

        assert solana.create_program_address([b"config", bytes([bump])], program) == \
            Pubkey.create_program_address([b"config", bytes([bump])], program)

    def test_result_is_off_curve(self):
        """Test that derived addresses can never have a private key."""
        address, _ = solana.find_program_address([b"vault"], PROGRAM_ID)
        assert not address.is_on_curve()

    def test_seed_too_long(self):
        """Test that seeds over 32 bytes are rejected."""
        with pytest.raises(InputError):
            solana.find_program_address([b"x" * 33], PROGRAM_ID)

    def test_too_many_seeds(self):
        """Test that at most 15 seeds leave room for the bump."""
        with pytest.raises(InputError):
            solana.find_program_address([b"s"] * 16, PROGRAM_ID)

    def test_associated_token_address(self):
        """Test the ATA derivation seeds."""
        owner = Pubkey.from_string(SOLANA_ADDRESS)
        expected, _ = Pubkey.find_program_address(
            [bytes(owner), bytes(solana.TOKEN_PROGRAM_ID), bytes(Pubkey.from_string(MINT))],
            solana.ASSOCIATED_TOKEN_PROGRAM_ID,
        )
        assert solana.associated_token_address(owner, MINT) == expected

    def test_pool_addresses(self):
        """Test the pool config/vault/nonce seeds."""
        program = Pubkey.from_string(PROGRAM_ID)
        assert solana.pool_config_address(PROGRAM_ID) == Pubkey.find_program_address([b"config"], program)[0]
        assert solana.pool_vault_address(PROGRAM_ID) == Pubkey.find_program_address([b"vault"], program)[0]
        assert solana.nonce_marker_address(PROGRAM_ID, 5) == Pubkey.find_program_address(
            [b"nonce", (5).to_bytes(8, "little")], program
        )[0]

    @pytest.mark.parametrize("position", [0, 3, 31])
    def test_changing_a_seed_byte_changes_address(self, position):
        """Test that flipping any byte of a seed moves the derived address."""
        seed = bytearray(bytes(Pubkey.from_string(MINT)))
        original, _ = solana.find_program_address([b"nonce", bytes(seed)], PROGRAM_ID)

        seed[position] ^= 0x01
        mutated, _ = solana.find_program_address([b"nonce", bytes(seed)], PROGRAM_ID)

        assert mutated != original
        assert mutated == Pubkey.find_program_address([b"nonce", bytes(seed)], Pubkey.from_string(PROGRAM_ID))[0]

    def test_changing_program_id_changes_address(self):
        """Test that the same seeds under another program give another address."""
        other = solana.find_program_address([b"config"], MINT)[0]
        assert other != solana.pool_config_address(PROGRAM_ID)

    def test_metadata_address(self):
        """Test the token metadata seeds."""
        expected, _ = Pubkey.find_program_address(
            [b"metadata", bytes(solana.TOKEN_METADATA_PROGRAM_ID), bytes(Pubkey.from_string(MINT))],
            solana.TOKEN_METADATA_PROGRAM_ID,
        )
        assert solana.metadata_address(MINT) == expected


class TestEd25519Instruction:
    """Tests for the Ed25519SigVerify instruction layout."""

    def test_layout(self):
        """Test header offsets and inline data order."""
        public_key = b"\x01" * 32
        signature = b"\x02" * 64
        message = b"withdraw:42"

        ix = solana.ed25519_verify_instruction(public_key, message, signature)
        data = bytes(ix.data)

        assert ix.program_id == solana.ED25519_PROGRAM_ID
        assert list(ix.accounts) == []
        assert struct.unpack("<BBHHHHHHH", data[:16]) == (1, 0, 16, 0, 80, 0, 112, len(message), 0)
        assert data[16:80] == signature
        assert data[80:112] == public_key
        assert data[112:] == message

    def test_instruction_index(self):
        """Test that offsets can point at a later instruction slot."""
        ix = solana.ed25519_verify_instruction(b"\x01" * 32, b"m", b"\x02" * 64, instruction_index=2)
        header = struct.unpack("<BBHHHHHHH", bytes(ix.data)[:16])
        assert header[3] == header[5] == header[8] == 2

    @pytest.mark.parametrize("public_key,signature", [
        (b"\x01" * 31, b"\x02" * 64),
        (b"\x01" * 32, b"\x02" * 63),
    ])
    def test_rejects_bad_lengths(self, public_key, signature):
        """Test key and signature length checks."""
        with pytest.raises(InputError):
            solana.ed25519_verify_instruction(public_key, b"m", signature)


class TestPoolInstructions:
    """Tests for the pool program instructions."""

    def test_deposit_spl(self):
        """Test deposit_spl data and account order."""
        ix = solana.deposit_spl_instruction(PROGRAM_ID, SOLANA_ADDRESS, MINT, 1_000_000, "user-7")
        data = bytes(ix.data)
        user = Pubkey.from_string(SOLANA_ADDRESS)
        vault = solana.pool_vault_address(PROGRAM_ID)

        assert ix.program_id == Pubkey.from_string(PROGRAM_ID)
        assert data[:8] == solana.discriminator("deposit_spl")
        assert data[8:16] == (1_000_000).to_bytes(8, "little")
        assert data[16:] == b"\x06\x00\x00\x00user-7"

        accounts = list(ix.accounts)
        assert len(accounts) == 9
        assert accounts[0].pubkey == solana.pool_config_address(PROGRAM_ID)
        assert accounts[1].pubkey == vault and accounts[1].is_writable
        assert accounts[3].pubkey == user and accounts[3].is_signer
        assert accounts[4].pubkey == solana.associated_token_address(user, MINT)
        assert accounts[5].pubkey == solana.associated_token_address(vault, MINT)
        assert [a for a in accounts if a.is_signer] == [accounts[3]]

    def test_withdraw_spl(self):
        """Test withdraw_spl data and the nonce marker account."""
        ix = solana.withdraw_spl_instruction(
            PROGRAM_ID, SOLANA_ADDRESS, MINT, SOLANA_ADDRESS, amount=500, nonce=9, user_id="u", sig_ix_index=0
        )
        data = bytes(ix.data)

        assert data[:8] == solana.discriminator("withdraw_spl")
        assert struct.unpack("<QQ", data[8:24]) == (500, 9)
        assert data[24:29] == b"\x01\x00\x00\x00u"
        assert data[29:] == b"\x00"

        accounts = list(ix.accounts)
        assert len(accounts) == 12
        assert accounts[1].is_signer
        assert accounts[3].pubkey == solana.nonce_marker_address(PROGRAM_ID, 9)
        assert accounts[8].pubkey == solana.SYSVAR_INSTRUCTIONS_ID

    def test_transfer_sol(self):
        """Test the system transfer instruction data."""
        ix = solana.transfer_sol_instruction(SOLANA_ADDRESS, MINT, 5000)
        assert bytes(ix.data) == struct.pack("<IQ", 2, 5000)
        assert ix.program_id == solana.SYSTEM_PROGRAM_ID

    def test_create_ata_idempotent(self):
        """Test the idempotent ATA creation instruction."""
        vault = solana.pool_vault_address(PROGRAM_ID)
        ix = solana.create_ata_idempotent_instruction(SOLANA_ADDRESS, vault, MINT)

        assert bytes(ix.data) == b"\x01"
        assert ix.program_id == solana.ASSOCIATED_TOKEN_PROGRAM_ID
        assert list(ix.accounts)[1].pubkey == solana.associated_token_address(vault, MINT)

    def test_transfer_spl(self):
        """Test TransferChecked data and the token account order."""
        owner = Pubkey.from_string(SOLANA_ADDRESS)
        recipient = solana.pool_vault_address(PROGRAM_ID)
        ix = solana.transfer_spl_instruction(owner, MINT, recipient, 1_500, 6)

        assert ix.program_id == solana.TOKEN_PROGRAM_ID
        assert bytes(ix.data) == b"\x0c" + (1_500).to_bytes(8, "little") + b"\x06"

        accounts = list(ix.accounts)
        assert accounts[0].pubkey == solana.associated_token_address(owner, MINT)
        assert accounts[1].pubkey == Pubkey.from_string(MINT) and not accounts[1].is_writable
        assert accounts[2].pubkey == solana.associated_token_address(recipient, MINT)
        assert accounts[3].pubkey == owner and accounts[3].is_signer
        assert [a for a in accounts if a.is_writable] == [accounts[0], accounts[2]]


class TestMessages:
    """Tests for message compilation."""

    def test_compile_single_signer(self):
        """Test that the payer is the only required signer."""
        ix = solana.deposit_spl_instruction(PROGRAM_ID, SOLANA_ADDRESS, MINT, 1, "u")
        message = solana.compile_message([ix], SOLANA_ADDRESS, BLOCKHASH)

        assert message.header.num_required_signatures == 1
        assert message.account_keys[0] == Pubkey.from_string(SOLANA_ADDRESS)
        assert str(message.recent_blockhash) == BLOCKHASH

    def test_compile_rejects_empty(self):
        """Test that a message needs instructions."""
        with pytest.raises(InputError):
            solana.compile_message([], SOLANA_ADDRESS, BLOCKHASH)

    def test_compile_rejects_bad_blockhash(self):
        """Test blockhash validation."""
        ix = solana.transfer_sol_instruction(SOLANA_ADDRESS, MINT, 1)
        with pytest.raises(InputError):
            solana.compile_message([ix], SOLANA_ADDRESS, "not-a-hash")

    def test_estimate_fee(self):
        """Test the base fee per signature."""
        assert solana.estimate_fee() == 5000
        assert solana.estimate_fee(2) == 10000
