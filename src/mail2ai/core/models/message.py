"""EmailContent Domain Model -- 邮件入站的统一格式

邮件采集适配器把每封新邮件转换为 EmailContent，
再以 to_prompt() 的结果作为 Task.prompt 入队。
"""

from datetime import UTC, datetime
from typing import Any

from pydantic import Field

from .task import CamelModel


class EmailAddress(CamelModel):
    """邮件地址"""

    address: str = Field(description="邮箱地址")
    name: str | None = Field(default=None, description="显示名称")


class EmailAttachment(CamelModel):
    """邮件附件元数据（不含内容）"""

    filename: str = Field(description="文件名")
    content_type: str = Field(description="MIME 类型")
    size: int = Field(default=0, description="文件大小")


class EmailContent(CamelModel):
    """EmailContent -- 邮件入站的统一格式"""

    message_id: str = Field(description="邮件 Message-ID")
    subject: str = Field(description="主题")
    sender: EmailAddress = Field(alias="from", description="发件人")
    to: list[EmailAddress] = Field(default_factory=list, description="收件人")
    date: datetime = Field(
        default_factory=lambda: datetime.now(UTC),
        description="发送时间",
    )
    text: str | None = Field(default=None, description="纯文本正文")
    html: str | None = Field(default=None, description="HTML 正文")
    attachments: list[EmailAttachment] = Field(
        default_factory=list,
        description="附件列表",
    )

    def to_prompt(self) -> dict[str, Any]:
        """转换为 Task.prompt 载荷"""
        return self.model_dump(mode="json", by_alias=True, exclude_none=True)

    @classmethod
    def manual(
        cls,
        subject: str,
        sender: str,
        text: str,
        html: str | None = None,
    ) -> "EmailContent":
        """手动入队时构造一封虚拟邮件"""
        now = datetime.now(UTC)
        return cls(
            message_id=f"manual-{int(now.timestamp() * 1000)}",
            subject=subject,
            sender=EmailAddress(address=sender, name=sender.split("@")[0]),
            date=now,
            text=text,
            html=html,
        )
