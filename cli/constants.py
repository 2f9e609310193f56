"""CLI constants."""

GREEN = "\033[32m"
RESET = "\033[0m"

PROG_NAME = "nostrsave-fetch"

SECRET_PROMPT = "nsec> "

HELP_TEXT = """Usage: nostrsave-fetch [--debug] <command> [args]

Commands:
  list <key> [page]                              List files on an index page (1 = current)
  download <key> <file_hash> [output_path]       Reconstruct a file and write it to disk
      --ask-secret                               Prompt for an nsec to decrypt encrypted chunks
  help                                           Show this help

<key> is an npub, a 64-char hex public key, or an nsec (which also decrypts).
Relays are read from ~/.nostrsave/config.json or NOSTRSAVE_RELAYS.
Examples:
  nostrsave-fetch list npub1...
  nostrsave-fetch list npub1... 2
  nostrsave-fetch download npub1... 3f2a... downloads/report.pdf --ask-secret"""
