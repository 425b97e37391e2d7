"""Esquemas Pydantic para el webhook de Evolution API."""

from pydantic import BaseModel, ConfigDict, Field

WHATSAPP_JID_SUFFIX = "@s.whatsapp.net"


class EvolutionModel(BaseModel):
    model_config = ConfigDict(populate_by_name=True, extra="allow")


class MessageKey(EvolutionModel):
    remote_jid: str = Field(..., alias="remoteJid")
    from_me: bool = Field(default=False, alias="fromMe")
    id: str | None = None


class ExtendedTextMessage(EvolutionModel):
    text: str | None = None


class MessageContent(EvolutionModel):
    conversation: str | None = None
    extended_text_message: ExtendedTextMessage | None = Field(
        default=None, alias="extendedTextMessage"
    )

    @property
    def text(self) -> str:
        if self.conversation:
            return self.conversation
        if self.extended_text_message and self.extended_text_message.text:
            return self.extended_text_message.text
        return ""


class MessageData(EvolutionModel):
    key: MessageKey
    push_name: str | None = Field(default=None, alias="pushName")
    message: MessageContent | None = None

    @property
    def client_number(self) -> str:
        return self.key.remote_jid.replace(WHATSAPP_JID_SUFFIX, "")


class EvolutionWebhook(EvolutionModel):
    """Evento `messages.upsert` enviado por Evolution."""

    event: str | None = None
    instance: str | None = None
    data: MessageData
