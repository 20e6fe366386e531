"""
dualboot chroot configuration script.

The script that finalizes the new system runs inside arch-chroot. Its body is
a fixed template; every run-specific value is rendered into a block of shell
declarations at the top, each one quoted with shlex.quote.
"""

from __future__ import annotations

import shlex
from dataclasses import dataclass, field, fields
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from dualboot.core.config import InstallerConfig
    from dualboot.core.models import DetectedLayout

CHROOT_LOG = "/root/post_install_chroot.log"
ARCH_ENTRY_NAME = "arch"


@dataclass(frozen=True)
class BootEntry:
    """A systemd-boot loader entry."""

    title: str
    linux: str | None = None
    initrd: tuple[str, ...] = ()
    options: tuple[str, ...] = ()
    efi: str | None = None

    def __post_init__(self) -> None:
        if (self.linux is None) == (self.efi is None):
            raise ValueError("A boot entry needs exactly one of linux or efi")

    def render(self) -> str:
        lines = [f"title   {self.title}"]
        if self.linux is not None:
            lines.append(f"linux   {self.linux}")
            lines.extend(f"initrd  {image}" for image in self.initrd)
            if self.options:
                lines.append(f"options {' '.join(self.options)}")
        else:
            lines.append(f"efi     {self.efi}")
        return "\n".join(lines) + "\n"


@dataclass(frozen=True)
class LoaderConfig:
    """systemd-boot loader.conf."""

    default: str = ARCH_ENTRY_NAME
    timeout: int = 5
    editor: bool = False

    def render(self) -> str:
        return (
            f"default {self.default}\n"
            f"timeout {self.timeout}\n"
            f"editor {'yes' if self.editor else 'no'}\n"
        )


def root_identity(identifiers: dict[str, str], device: str) -> str:
    """Kernel root= value: PARTUUID when known, the device path otherwise."""
    if identifiers.get("PARTUUID"):
        return f"PARTUUID={identifiers['PARTUUID']}"
    if identifiers.get("UUID"):
        return f"UUID={identifiers['UUID']}"
    return device


def build_boot_entries(
    identity: str,
    microcode: str,
    kernel_options: list[str],
    foreign_title: str,
    foreign_bootloader: str,
) -> tuple[BootEntry, BootEntry, BootEntry]:
    """Arch, Arch fallback and foreign OS entries."""
    ucode = () if microcode == "none" else (f"/{microcode}.img",)
    root_option = f"root={identity}"

    arch = BootEntry(
        title="Arch Linux",
        linux="/vmlinuz-linux",
        initrd=(*ucode, "/initramfs-linux.img"),
        options=(root_option, *kernel_options),
    )
    fallback = BootEntry(
        title="Arch Linux (fallback)",
        linux="/vmlinuz-linux",
        initrd=(*ucode, "/initramfs-linux-fallback.img"),
        options=(root_option, "rw"),
    )
    foreign = BootEntry(title=foreign_title, efi="/" + foreign_bootloader.lstrip("/"))
    return arch, fallback, foreign


@dataclass(frozen=True)
class ChrootValues:
    """Every value the chroot script needs, in declaration order."""

    root_partition: str
    root_identity: str
    boot_partition: str
    username: str
    hostname: str
    timezone: str
    locale: str
    aur_helper: str
    secure_boot: bool
    foreign_bootloader: str
    foreign_source: str | None
    arch_entry: str
    fallback_entry: str
    foreign_entry: str
    loader_conf: str = field(default_factory=lambda: LoaderConfig().render())

    @classmethod
    def from_layout(
        cls,
        config: InstallerConfig,
        layout: DetectedLayout,
        identifiers: dict[str, str],
    ) -> ChrootValues:
        system = config.system
        identity = root_identity(identifiers, layout.root.device_path)
        arch, fallback, foreign = build_boot_entries(
            identity,
            system.microcode,
            system.kernel_options,
            system.foreign_os_title,
            config.install.foreign_bootloader,
        )
        return cls(
            root_partition=layout.root.device_path,
            root_identity=identity,
            boot_partition=layout.boot.device_path,
            username=system.username,
            hostname=system.hostname,
            timezone=system.timezone,
            locale=system.locale,
            aur_helper=system.aur_helper,
            secure_boot=system.secure_boot,
            foreign_bootloader=config.install.foreign_bootloader.lstrip("/"),
            foreign_source=layout.foreign_source,
            arch_entry=arch.render(),
            fallback_entry=fallback.render(),
            foreign_entry=foreign.render(),
        )

    def render_declarations(self) -> str:
        """Shell assignments for every field; values are always quoted."""
        lines = []
        for f in fields(self):
            value = getattr(self, f.name)
            if isinstance(value, bool):
                value = "yes" if value else "no"
            elif value is None:
                value = ""
            lines.append(f"{f.name.upper()}={shlex.quote(str(value))}")
        return "\n".join(lines) + "\n"


HEADER = f"""#!/usr/bin/env bash
# Runs inside the installed system: arch-chroot <root> /root/_post_install.sh
set -euo pipefail
exec > >(tee -a {CHROOT_LOG}) 2>&1
"""

TEMPLATE = r"""
echo "CHROOT: starting post-install tasks"

# Time, locale
ln -sf "/usr/share/zoneinfo/${TIMEZONE}" /etc/localtime
hwclock --systohc || true
echo "${LOCALE} UTF-8" > /etc/locale.gen
locale-gen
echo "LANG=${LOCALE}" > /etc/locale.conf

# Hostname
echo "${HOSTNAME}" > /etc/hostname
cat > /etc/hosts <<HOSTS
127.0.0.1   localhost
::1         localhost
127.0.1.1   ${HOSTNAME}.localdomain ${HOSTNAME}
HOSTS

# Accounts
echo "Set ROOT password now:"
passwd
if ! id -u "${USERNAME}" >/dev/null 2>&1; then
  useradd -m -G wheel -s /bin/bash "${USERNAME}"
fi
echo "Set password for ${USERNAME}:"
passwd "${USERNAME}"
sed -i 's/^# %wheel ALL=(ALL:ALL) ALL/%wheel ALL=(ALL:ALL) ALL/' /etc/sudoers

systemctl enable NetworkManager

# The shared ESP receives the initramfs and the boot loader
if mountpoint -q /boot; then
  mount -o remount,rw /boot
fi

mkinitcpio -P

# Boot loader on the shared ESP
bootctl --esp-path=/boot install

mkdir -p /boot/loader/entries
printf '%s' "${ARCH_ENTRY}" > /boot/loader/entries/arch.conf
printf '%s' "${FALLBACK_ENTRY}" > /boot/loader/entries/arch-fallback.conf

if [ ! -f "/boot/${FOREIGN_BOOTLOADER}" ] && [ -n "${FOREIGN_SOURCE}" ]; then
  echo "Copying foreign boot manager from ${FOREIGN_SOURCE}"
  mkdir -p /mnt/foreign_esp
  if mount -o ro "${FOREIGN_SOURCE}" /mnt/foreign_esp; then
    if [ -f "/mnt/foreign_esp/${FOREIGN_BOOTLOADER}" ]; then
      mkdir -p "$(dirname "/boot/${FOREIGN_BOOTLOADER}")"
      cp "/mnt/foreign_esp/${FOREIGN_BOOTLOADER}" "/boot/${FOREIGN_BOOTLOADER}"
    fi
    umount /mnt/foreign_esp
  fi
  rmdir /mnt/foreign_esp 2>/dev/null || true
fi
if [ -f "/boot/${FOREIGN_BOOTLOADER}" ]; then
  printf '%s' "${FOREIGN_ENTRY}" > /boot/loader/entries/windows.conf
else
  echo "[WARN] ${FOREIGN_BOOTLOADER} not found on /boot; no Windows entry written" >&2
fi

printf '%s' "${LOADER_CONF}" > /boot/loader/loader.conf

# Secure Boot
if [ "${SECURE_BOOT}" = "yes" ]; then
  if ! sbctl status --json | grep -Eq '"setup_mode"[[:space:]]*:[[:space:]]*true'; then
    echo "[ERROR] Secure Boot firmware is not in Setup Mode. Enable Setup Mode in the UEFI firmware and rerun this script." >&2
    exit 1
  fi
  sbctl create-keys
  sbctl enroll-keys -m
  sbctl sign -s /boot/EFI/systemd/systemd-bootx64.efi
  sbctl sign -s /boot/EFI/BOOT/BOOTX64.EFI
  sbctl sign -s /boot/vmlinuz-linux

  cat > /usr/local/sbin/dkms-sign-and-sbctl <<'HOOK'
#!/usr/bin/env bash
set -euo pipefail
LOG="/var/log/dkms-sign-sbctl.log"
echo "$(date) [dkms-sign] Starting" >> "${LOG}" 2>&1
sbctl sign-all >> "${LOG}" 2>&1 || true
HOOK
  chmod 755 /usr/local/sbin/dkms-sign-and-sbctl
  mkdir -p /etc/pacman.d/hooks
  cat > /etc/pacman.d/hooks/99-sign-sbctl.hook <<'HOOK'
[Trigger]
Operation = Install
Operation = Upgrade
Type = Package
Target = linux
Target = linux-lts
Target = dkms

[Action]
Description = Sign kernel and rebuilt DKMS modules with sbctl
When = PostTransaction
Exec = /usr/local/sbin/dkms-sign-and-sbctl
HOOK
fi

# AUR helper, built as the new user
if [ -n "${AUR_HELPER}" ] && command -v git >/dev/null 2>&1 && command -v makepkg >/dev/null 2>&1; then
  su - "${USERNAME}" -c 'rm -rf ~/"$1" && git clone "https://aur.archlinux.org/$1.git" ~/"$1" && cd ~/"$1" && makepkg -si --noconfirm' _ "${AUR_HELPER}" \
    || echo "[WARN] Failed to install AUR helper ${AUR_HELPER}; install it manually." >&2
fi

if mountpoint -q /boot; then
  mount -o remount,ro /boot || true
fi

echo "CHROOT: done. Verify sbctl enrollment and boot entries after first boot."
"""

VERIFY_SCRIPT = r"""#!/usr/bin/env bash
# Run inside the installed system after first boot
set -euo pipefail
echo "=== Post-install verification ==="
echo "1) systemd-boot status:"
bootctl status || true
echo "2) sbctl status:"
if command -v sbctl >/dev/null 2>&1; then sbctl status || true; else echo "sbctl not installed"; fi
echo "3) kernel files in /boot:"
ls -lah /boot || true
echo "4) loader entries:"
ls -lah /boot/loader/entries || true
echo "5) If keys are not enrolled yet: sudo sbctl enroll-keys -m"
echo "=== End verification ==="
"""


class ChrootScriptBuilder:
    """Assembles the chroot script from values and the fixed template."""

    def __init__(self, values: ChrootValues) -> None:
        self.values = values

    def build(self) -> str:
        return (
            HEADER
            + "\n# Run-specific values\n"
            + self.values.render_declarations()
            + TEMPLATE
        )
