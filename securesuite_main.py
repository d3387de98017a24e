"""
SecureSuite - Interactive Menu

Main user interface for the three secure features.
Features:
- Register / unlock a password manager account
- Add entries (manual or generated), list, search, edit, delete
- Change master password
- Seal / open .secure files
- Generate signing keys, sign and verify files
- Export the identity store as users.json
"""

import os
import sys
import getpass
from pathlib import Path

from securesuite import crypto, files, signing
from securesuite.config import Settings, setup_logging
from securesuite.errors import SecureSuiteError
from securesuite.store import IdentityStore
from securesuite.vault import VaultSession

MIN_PASSWORD_LENGTH = 8


def clear_screen():
    os.system("cls" if os.name == "nt" else "clear")


def pause():
    input("\nPress Enter to continue...")


def ask_new_password(prompt="Enter password: "):
    while True:
        pw = getpass.getpass(prompt)
        pw2 = getpass.getpass("Confirm: ")
        if pw != pw2:
            print("Passwords don't match.\n")
            continue
        if len(pw) < MIN_PASSWORD_LENGTH:
            print(f"Too short (min {MIN_PASSWORD_LENGTH} chars).\n")
            continue
        return pw


def ask_path(prompt):
    raw = input(prompt).strip()
    return Path(raw).expanduser() if raw else None


def require_unlocked(session, store, settings):
    if session and session.is_unlocked:
        return session
    username = input("Username: ").strip()
    if not username:
        return None
    password = getpass.getpass("Master password: ")
    session = VaultSession(store, username, settings.pbkdf2_iterations)
    try:
        session.unlock(password)
        print(f"\n✓ Unlocked {username}'s vault.")
        return session
    except SecureSuiteError as e:
        print(f"\nERROR: Failed to unlock vault ({e}).")
        return None


def print_entries(matches):
    if not matches:
        print("No entries.")
        return
    print(f"{'#':<4}  {'Site':<24}  {'User':<24}  {'URL'}")
    print("-" * 70)
    for i, e in matches:
        print(f"{i + 1:<4}  {e.site:<24}  {e.user:<24}  {e.url or '-'}")


def choose_entry(session):
    print_entries(list(enumerate(session.entries)))
    choice = input("\nEntry #: ").strip()
    if not choice.isdigit():
        return None
    return int(choice) - 1


# =============================================================================
# Password Manager
# =============================================================================

def cmd_register(store, settings):
    clear_screen()
    print("=== Register Account ===\n")
    username = input("Username: ").strip()
    if not username:
        print("Username required.")
        pause()
        return None
    password = ask_new_password("Master password: ")
    print("\nDeriving keys...")
    session = VaultSession(store, username, settings.pbkdf2_iterations)
    try:
        session.register(password)
        print(f"\n✓ Account '{username}' created with an empty vault.")
    except SecureSuiteError as e:
        print(f"ERROR: {e}")
        session = None
    pause()
    return session


def cmd_unlock(session, store, settings):
    clear_screen()
    print("=== Unlock Vault ===\n")
    if session:
        session.lock()
    session = require_unlocked(None, store, settings)
    pause()
    return session


def cmd_add_entry(session, store, settings, generated=False):
    clear_screen()
    print(f"=== Add New Entry ({'Generated' if generated else 'Manual'}) ===\n")
    session = require_unlocked(session, store, settings)
    if not session:
        pause()
        return None
    site = input("Site (required): ").strip()
    user = input("Username on site: ").strip()
    url = input("URL (optional): ").strip() or None
    if generated:
        try:
            length = int(input("Password length [20]: ").strip() or 20)
        except ValueError:
            length = 20
        symbols = input("Include symbols? [Y/n]: ").strip().lower() not in ("n", "no")
        secret = crypto.generate_password(length, symbols)
        print(f"\nGenerated: {secret}")
    else:
        secret = getpass.getpass("Password: ")
    try:
        session.add_entry(site, user, secret, url=url)
        print(f"\n✓ Added! Vault now holds {len(session.entries)} entries.")
    except SecureSuiteError as e:
        print(f"ERROR: {e}")
    pause()
    return session


def cmd_list_entries(session, store, settings, search=False):
    clear_screen()
    print(f"=== {'Search' if search else 'List'} Entries ===\n")
    session = require_unlocked(session, store, settings)
    if not session:
        pause()
        return None
    query = input("Search (site, user or URL): ").strip() if search else ""
    print_entries(session.find(query))
    pause()
    return session


def cmd_show_password(session, store, settings):
    clear_screen()
    print("=== Show Password ===\n")
    session = require_unlocked(session, store, settings)
    if not session:
        pause()
        return None
    index = choose_entry(session)
    if index is None or not 0 <= index < len(session.entries):
        print("Cancelled.")
    else:
        e = session.entries[index]
        print(f"\n  Site: {e.site}\n  User: {e.user}\n  Password: {e.password}")
    pause()
    return session


def cmd_edit_entry(session, store, settings):
    clear_screen()
    print("=== Edit Entry ===\n")
    session = require_unlocked(session, store, settings)
    if not session:
        pause()
        return None
    index = choose_entry(session)
    if index is None:
        print("Cancelled.")
        pause()
        return session
    changes = {}
    for field in ("site", "user", "url", "notes"):
        value = input(f"New {field} (Enter to keep): ").strip()
        if value:
            changes[field] = value
    secret = getpass.getpass("New password (Enter to keep): ")
    if secret:
        changes["password"] = secret
    try:
        session.update_entry(index, **changes)
        print("\n✓ Entry updated.")
    except SecureSuiteError as e:
        print(f"ERROR: {e}")
    pause()
    return session


def cmd_delete_entry(session, store, settings):
    clear_screen()
    print("=== Delete Entry ===\n")
    session = require_unlocked(session, store, settings)
    if not session:
        pause()
        return None
    index = choose_entry(session)
    if index is None:
        print("Cancelled.")
        pause()
        return session
    if input("\nType 'yes' to confirm: ").strip().lower() != "yes":
        print("Cancelled.")
        pause()
        return session
    try:
        removed = session.remove_entry(index)
        print(f"\n✓ Deleted entry for {removed.site}.")
    except SecureSuiteError as e:
        print(f"ERROR: {e}")
    pause()
    return session


def cmd_change_password(session, store, settings):
    clear_screen()
    print("=== Change Master Password ===\n")
    session = require_unlocked(session, store, settings)
    if not session:
        pause()
        return None
    password = ask_new_password("New master password: ")
    try:
        session.change_password(password)
        print("\n✓ Password changed. Vault re-encrypted under the new key.")
    except SecureSuiteError as e:
        print(f"ERROR: {e}")
    pause()
    return session


# =============================================================================
# Secure Files
# =============================================================================

def cmd_seal_file(settings):
    clear_screen()
    print("=== Seal File (.secure) ===\n")
    src = ask_path("File to seal: ")
    if not src or not src.is_file():
        print("File not found.")
        pause()
        return
    password = ask_new_password("File password: ")
    try:
        dest = files.seal_path(src, password, iterations=settings.pbkdf2_iterations)
        print(f"\n✓ Sealed: {dest}")
    except (SecureSuiteError, OSError) as e:
        print(f"ERROR: {e}")
    pause()


def cmd_open_file():
    clear_screen()
    print("=== Open File (.secure) ===\n")
    src = ask_path("Secure file: ")
    if not src or not src.is_file():
        print("File not found.")
        pause()
        return
    password = getpass.getpass("File password: ")
    out = ask_path("Output path (Enter for original name): ")
    try:
        dest = files.open_path(src, password, out=out)
        print(f"\n✓ Restored: {dest}")
    except (SecureSuiteError, OSError) as e:
        print(f"ERROR: {e}")
    pause()


# =============================================================================
# Sign / Verify
# =============================================================================

def cmd_generate_keys():
    clear_screen()
    print("=== Generate Signing Keys (ECDSA P-256) ===\n")
    base = ask_path("Key file prefix [signing]: ") or Path("signing")
    keys = signing.generate_signing_keys()
    try:
        base.with_name(base.name + ".pub").write_bytes(keys.public_key)
        key_path = base.with_name(base.name + ".key")
        key_path.write_bytes(keys.private_key)
        key_path.chmod(0o600)
        print(f"\n✓ Public key:  {base.name}.pub (share this)")
        print(f"✓ Private key: {base.name}.key (keep this secret)")
    except OSError as e:
        print(f"ERROR: {e}")
    pause()


def cmd_sign_file():
    clear_screen()
    print("=== Sign File ===\n")
    src = ask_path("File to sign: ")
    key_path = ask_path("Private key (.key): ")
    try:
        sig = signing.sign(key_path.read_bytes(), src.read_bytes())
        sig_path = src.with_name(src.name + ".sig")
        sig_path.write_bytes(sig)
        print(f"\n✓ Signature: {sig_path}")
    except (SecureSuiteError, OSError, AttributeError) as e:
        print(f"ERROR: {e}")
    pause()


def cmd_verify_file():
    clear_screen()
    print("=== Verify Signature ===\n")
    src = ask_path("Signed file: ")
    pub_path = ask_path("Public key (.pub): ")
    try:
        sig_path = ask_path(f"Signature [{src.name}.sig]: ") or src.with_name(src.name + ".sig")
        ok = signing.verify(pub_path.read_bytes(), src.read_bytes(), sig_path.read_bytes())
        print("\n✓ Signature valid." if ok else "\n✗ Signature INVALID!")
    except (OSError, AttributeError) as e:
        print(f"ERROR: {e}")
    pause()


def cmd_export(store):
    clear_screen()
    print("=== Export users.json ===\n")
    out = input("Output file [users.json]: ").strip() or "users.json"
    try:
        count = store.export_json(out)
        print(f"\n✓ Exported {count} users to {out}")
    except (SecureSuiteError, OSError) as e:
        print(f"ERROR: {e}")
    pause()


def print_menu(session, settings):
    print("SecureSuite - Interactive Menu")
    print("=" * 40)
    print(f"Store: {settings.db_path}")
    status = f"UNLOCKED ({session.username})" if session and session.is_unlocked else "LOCKED"
    print(f"Vault: {status}")
    print("\n 1) Register account")
    print(" 2) Unlock vault")
    print(" 3) Add entry (manual)")
    print(" 4) Add entry (generated)")
    print(" 5) List entries")
    print(" 6) Search entries")
    print(" 7) Show password")
    print(" 8) Edit entry")
    print(" 9) Delete entry")
    print("10) Change master password")
    print("11) Seal file (.secure)")
    print("12) Open file (.secure)")
    print("13) Generate signing keys")
    print("14) Sign file")
    print("15) Verify signature")
    print("16) Export users.json")
    print("17) Lock vault")
    print(" 0) Exit")


def main_menu(settings):
    session = None
    with IdentityStore.from_settings(settings) as store:
        while True:
            clear_screen()
            print_menu(session, settings)
            c = input("\n> ").strip()
            if c == "1":
                session = cmd_register(store, settings) or session
            elif c == "2":
                session = cmd_unlock(session, store, settings)
            elif c == "3":
                session = cmd_add_entry(session, store, settings)
            elif c == "4":
                session = cmd_add_entry(session, store, settings, generated=True)
            elif c == "5":
                session = cmd_list_entries(session, store, settings)
            elif c == "6":
                session = cmd_list_entries(session, store, settings, search=True)
            elif c == "7":
                session = cmd_show_password(session, store, settings)
            elif c == "8":
                session = cmd_edit_entry(session, store, settings)
            elif c == "9":
                session = cmd_delete_entry(session, store, settings)
            elif c == "10":
                session = cmd_change_password(session, store, settings)
            elif c == "11":
                cmd_seal_file(settings)
            elif c == "12":
                cmd_open_file()
            elif c == "13":
                cmd_generate_keys()
            elif c == "14":
                cmd_sign_file()
            elif c == "15":
                cmd_verify_file()
            elif c == "16":
                cmd_export(store)
            elif c == "17":
                if session:
                    session.lock()
                session = None
            elif c == "0":
                if session:
                    session.lock()
                print("\nGoodbye!")
                break


def main():
    try:
        settings = Settings.from_env()
    except SecureSuiteError as e:
        print(f"ERROR: {e}")
        return 1
    setup_logging(settings.log_level)
    try:
        main_menu(settings)
    except KeyboardInterrupt:
        print("\nExiting...")
    return 0


if __name__ == "__main__":
    sys.exit(main())
