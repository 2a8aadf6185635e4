"""Per-architecture knowledge needed to read a decoded instruction stream.

The relative reference form ``N(PC)`` counts instructions rather than bytes on
fixed-width ISAs, so the multiplier lives here instead of in the resolver.
"""

from dataclasses import dataclass
import capstone


@dataclass(frozen=True)
class Arch:
    """Architecture profile.

    Attributes:
        name: Short display name.
        stride: Bytes per unit of a relative ``N(PC)`` reference.
        traps: Trap/padding instructions stripped from the end of a func,
            lower case, compared by whole mnemonic (plus operands if given).
        cs_arch: capstone architecture constant.
        cs_mode: capstone mode flags.
    """
    name: str
    stride: int = 1
    traps: tuple[str, ...] = ()
    cs_arch: int | None = None
    cs_mode: int = 0

    def is_trap(self, text: str) -> bool:
        norm = " ".join(text.lower().split())
        return any(norm == t or norm.startswith(t + " ") for t in self.traps)

    def disassembler(self) -> capstone.Cs:
        """Create a capstone handle for this architecture, with operand detail."""
        if self.cs_arch is None:
            raise ValueError(f"{self.name} has no decoder")
        md = capstone.Cs(self.cs_arch, self.cs_mode)
        md.detail = True
        return md


X86 = Arch("386", stride=1, traps=("int3", "int $3"),
           cs_arch=capstone.CS_ARCH_X86, cs_mode=capstone.CS_MODE_32)
AMD64 = Arch("amd64", stride=1, traps=("int3", "int $3"),
             cs_arch=capstone.CS_ARCH_X86, cs_mode=capstone.CS_MODE_64)
ARM64 = Arch("arm64", stride=4, traps=("brk",),
             cs_arch=capstone.CS_ARCH_ARM64, cs_mode=capstone.CS_MODE_ARM)
ARM = Arch("arm", stride=4, traps=("udf", "bkpt"),
           cs_arch=capstone.CS_ARCH_ARM, cs_mode=capstone.CS_MODE_ARM)
RISCV64 = Arch("riscv64", stride=4, traps=("ebreak", "c.ebreak"),
               cs_arch=capstone.CS_ARCH_RISCV,
               cs_mode=capstone.CS_MODE_RISCV64 | capstone.CS_MODE_RISCVC)
RISCV32 = Arch("riscv32", stride=4, traps=("ebreak", "c.ebreak"),
               cs_arch=capstone.CS_ARCH_RISCV,
               cs_mode=capstone.CS_MODE_RISCV32 | capstone.CS_MODE_RISCVC)

# WASM pcs are byte offsets into the code section and branches are resolved
# structurally, so stride and traps are unused.
WASM = Arch("wasm", cs_arch=capstone.CS_ARCH_WASM, cs_mode=0)


def arch_for_elf(machine: str, elfclass: int, little_endian: bool = True) -> Arch:
    """Pick the profile for an ELF ``e_machine`` value as named by pyelftools."""
    if machine == "EM_X86_64":
        arch = AMD64
    elif machine == "EM_386":
        arch = X86
    elif machine == "EM_AARCH64":
        arch = ARM64
    elif machine == "EM_ARM":
        arch = ARM
    elif machine == "EM_RISCV":
        arch = RISCV64 if elfclass == 64 else RISCV32
    else:
        raise ValueError(f"unsupported machine {machine}")

    if not little_endian and arch.cs_arch != capstone.CS_ARCH_X86:
        arch = Arch(arch.name + "be", arch.stride, arch.traps, arch.cs_arch,
                    arch.cs_mode | capstone.CS_MODE_BIG_ENDIAN)
    return arch
