"""
Tests for dualboot.core.chroot module.
"""

import shlex

import pytest

from dualboot.core.chroot import (
    HEADER,
    TEMPLATE,
    BootEntry,
    ChrootScriptBuilder,
    ChrootValues,
    LoaderConfig,
    build_boot_entries,
    root_identity,
)
from dualboot.core.config import InstallerConfig
from dualboot.core.models import DetectedLayout, PartitionHandle, PartitionRole


def layout(foreign_source: str | None = None) -> DetectedLayout:
    return DetectedLayout(
        root=PartitionHandle("/dev/nvme0n1p5", PartitionRole.ROOT, 400001, 102400),
        home=PartitionHandle("/dev/nvme0n1p6", PartitionRole.HOME, 502401, 421887),
        boot=PartitionHandle("/dev/nvme0n1p1", PartitionRole.BOOT, 1, 100),
        foreign_bootloader_present=foreign_source is None,
        foreign_source=foreign_source,
    )


class TestBootEntry:
    """Tests for loader entry rendering."""

    def test_linux_entry(self) -> None:
        entry = BootEntry(
            title="Arch Linux",
            linux="/vmlinuz-linux",
            initrd=("/amd-ucode.img", "/initramfs-linux.img"),
            options=("root=PARTUUID=abc", "rw"),
        )
        assert entry.render() == (
            "title   Arch Linux\n"
            "linux   /vmlinuz-linux\n"
            "initrd  /amd-ucode.img\n"
            "initrd  /initramfs-linux.img\n"
            "options root=PARTUUID=abc rw\n"
        )

    def test_efi_entry(self) -> None:
        entry = BootEntry(title="Windows 11", efi="/EFI/Microsoft/Boot/bootmgfw.efi")
        assert entry.render() == "title   Windows 11\nefi     /EFI/Microsoft/Boot/bootmgfw.efi\n"

    def test_needs_exactly_one_target(self) -> None:
        with pytest.raises(ValueError):
            BootEntry(title="x")
        with pytest.raises(ValueError):
            BootEntry(title="x", linux="/vmlinuz-linux", efi="/x.efi")

    def test_loader_conf(self) -> None:
        assert LoaderConfig().render() == "default arch\ntimeout 5\neditor no\n"


class TestBootEntries:
    """Tests for the standard entry set."""

    def test_root_identity_prefers_partuuid(self) -> None:
        assert root_identity({"PARTUUID": "p", "UUID": "u"}, "/dev/x") == "PARTUUID=p"
        assert root_identity({"UUID": "u"}, "/dev/x") == "UUID=u"
        assert root_identity({}, "/dev/x") == "/dev/x"

    def test_entries(self) -> None:
        arch, fallback, foreign = build_boot_entries(
            "PARTUUID=abc", "intel-ucode", ["rw", "quiet"], "Windows 11", "EFI/Microsoft/Boot/bootmgfw.efi"
        )
        assert arch.initrd == ("/intel-ucode.img", "/initramfs-linux.img")
        assert arch.options == ("root=PARTUUID=abc", "rw", "quiet")
        assert fallback.title == "Arch Linux (fallback)"
        assert fallback.initrd[-1] == "/initramfs-linux-fallback.img"
        assert foreign.efi == "/EFI/Microsoft/Boot/bootmgfw.efi"

    def test_no_microcode(self) -> None:
        arch, _, _ = build_boot_entries("/dev/x", "none", [], "Windows", "a.efi")
        assert arch.initrd == ("/initramfs-linux.img",)


class TestChrootScript:
    """Tests for the chroot script."""

    def test_values_from_layout(self) -> None:
        values = ChrootValues.from_layout(InstallerConfig(), layout(), {"PARTUUID": "pu-5"})

        assert values.root_partition == "/dev/nvme0n1p5"
        assert values.root_identity == "PARTUUID=pu-5"
        assert values.boot_partition == "/dev/nvme0n1p1"
        assert values.foreign_source is None
        assert "options root=PARTUUID=pu-5 rw quiet splash" in values.arch_entry

    def test_declarations_precede_template(self) -> None:
        script = ChrootScriptBuilder(ChrootValues.from_layout(InstallerConfig(), layout(), {})).build()

        assert script.startswith(HEADER)
        assert script.endswith(TEMPLATE)
        declarations = script[len(HEADER):-len(TEMPLATE)]
        assert "USERNAME=archuser" in declarations
        assert "SECURE_BOOT=yes" in declarations
        assert "FOREIGN_SOURCE=''" in declarations

    def test_values_are_quoted(self) -> None:
        config = InstallerConfig()
        config.system.hostname = "box'; rm -rf / #"
        config.system.timezone = "$(reboot)"
        values = ChrootValues.from_layout(config, layout(), {})

        declarations = values.render_declarations()

        assert f"HOSTNAME={shlex.quote(config.system.hostname)}" in declarations
        assert "TIMEZONE='$(reboot)'" in declarations

    def test_declarations_parse_back_to_values(self) -> None:
        values = ChrootValues.from_layout(InstallerConfig(), layout(), {"PARTUUID": "x"})

        tokens = shlex.split(values.render_declarations())
        parsed = dict(token.split("=", 1) for token in tokens)

        assert len(tokens) == 15
        assert parsed["ARCH_ENTRY"] == values.arch_entry
        assert parsed["LOADER_CONF"] == values.loader_conf
        assert parsed["ROOT_IDENTITY"] == "PARTUUID=x"

    def test_foreign_source_declared(self) -> None:
        values = ChrootValues.from_layout(InstallerConfig(), layout("/dev/sda1"), {})
        assert "FOREIGN_SOURCE=/dev/sda1" in values.render_declarations()

    def test_secure_boot_disabled(self) -> None:
        config = InstallerConfig()
        config.system.secure_boot = False
        values = ChrootValues.from_layout(config, layout(), {})
        assert "SECURE_BOOT=no" in values.render_declarations()

    def test_template_gates(self) -> None:
        assert "set -euo pipefail" in HEADER
        assert "post_install_chroot.log" in HEADER
        assert '"setup_mode"' in TEMPLATE
        assert "exit 1" in TEMPLATE
        assert "sbctl enroll-keys -m" in TEMPLATE
        assert "99-sign-sbctl.hook" in TEMPLATE
        # Windows entry only written when the boot manager is on the ESP
        assert 'if [ -f "/boot/${FOREIGN_BOOTLOADER}" ]; then\n  printf' in TEMPLATE
        assert "bootctl --esp-path=/boot install" in TEMPLATE

    def test_boot_writable_before_initramfs(self) -> None:
        remount = TEMPLATE.index("mount -o remount,rw /boot")
        assert remount < TEMPLATE.index("mkinitcpio -P")
        assert remount < TEMPLATE.index("bootctl --esp-path=/boot install")
        assert TEMPLATE.index("mount -o remount,ro /boot") > TEMPLATE.index("sbctl sign -s /boot/vmlinuz-linux")

    def test_aur_helper_passed_as_argument(self) -> None:
        config = InstallerConfig()
        config.system.aur_helper = "x; touch /tmp/owned; #"
        values = ChrootValues.from_layout(config, layout(), {})

        assert f"AUR_HELPER={shlex.quote(config.system.aur_helper)}" in values.render_declarations()

        line = next(text for text in TEMPLATE.splitlines() if text.lstrip().startswith("su - "))
        tokens = shlex.split(line.rstrip(" \\"))
        assert tokens[:4] == ["su", "-", "${USERNAME}", "-c"]
        assert "AUR_HELPER" not in tokens[4]
        assert '"$1"' in tokens[4]
        assert tokens[5:] == ["_", "${AUR_HELPER}"]
