"""idunsh: command-line bridge to the idun cartridge and the C64 Ultimate.

Architecture:
    idunsh (this package)
        |
        | Unix domain socket /tmp/idunmm-lua
        | Text protocol: sys.shell(id, "arg", pid) / status byte reply
        v
    idun cartridge Lua control process

    idunsh --UDP broadcast ping--> C64 Ultimate ident service (port 64)
    idunsh --HTTP REST--> C64 Ultimate web remote control
"""

__version__ = "0.3.0"
