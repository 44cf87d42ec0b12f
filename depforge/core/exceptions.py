"""统一异常体系

所有业务异常继承 DepForgeError。CLI 层据此输出友好提示并决定退出码。

流水线步骤异常均继承 BuildStepError，携带依赖名、失败步骤和工具链原始输出，
编排器按依赖隔离捕获，不影响其他依赖。
"""

from __future__ import annotations


class DepForgeError(Exception):
    """框架基础异常"""

    code: str = "UNKNOWN"

    def __init__(self, message: str) -> None:
        super().__init__(message)


class ConfigError(DepForgeError):
    """配置文件或依赖清单缺失、内容无效"""

    code = "CONFIG_ERROR"


class ValidationError(DepForgeError):
    """输入数据校验失败"""

    code = "VALIDATION_ERROR"

    def __init__(self, message: str, details: list[str] | None = None) -> None:
        super().__init__(message)
        self.details = details or []


class ExecutionError(DepForgeError):
    """外部命令执行失败"""

    code = "EXECUTION_ERROR"

    def __init__(
        self, message: str, returncode: int | None = None, diagnostic: str = "",
    ) -> None:
        super().__init__(message)
        self.returncode = returncode
        self.diagnostic = diagnostic


class UnsupportedEnvironmentError(DepForgeError):
    """宿主机缺少必需工具（git / cmake）"""

    code = "UNSUPPORTED_ENVIRONMENT"


# =========================================================================
# 流水线步骤异常
# =========================================================================


class BuildStepError(DepForgeError):
    """单个依赖流水线中某一步骤失败"""

    code = "BUILD_STEP_ERROR"
    step: str = "unknown"

    def __init__(
        self, dependency: str, message: str, diagnostic: str = "",
    ) -> None:
        super().__init__(f"{dependency}: {self.step} 失败: {message}")
        self.dependency = dependency
        self.reason = message
        self.diagnostic = diagnostic


class FetchError(BuildStepError):
    """源码拉取失败（网络 / VCS）"""

    code = "FETCH_ERROR"
    step = "fetch"


class ConfigureError(BuildStepError):
    """工具链配置步骤失败"""

    code = "CONFIGURE_ERROR"
    step = "configure"


class CompileError(BuildStepError):
    """编译步骤失败"""

    code = "COMPILE_ERROR"
    step = "compile"


class InstallStepError(BuildStepError):
    """安装到 staging 目录失败"""

    code = "INSTALL_STEP_ERROR"
    step = "install"


class VerificationError(BuildStepError):
    """staging 目录缺少预期产物标记"""

    code = "VERIFICATION_ERROR"
    step = "verify"


class SwapError(BuildStepError):
    """备份或替换最终安装目录失败"""

    code = "SWAP_ERROR"
    step = "commit"
