from typing import Optional, Union

from pydantic import BaseModel, Field, field_validator, model_validator

from echokey.networks import DEFAULT_NETWORK, get_network

from .security import validate_amount, validate_network_id, validate_transaction_id


class CreateTransactionRequest(BaseModel):
    sender: str = Field(min_length=1, max_length=128)
    recipient: str = Field(min_length=1, max_length=128)
    amount: Union[str, float, int]
    network_id: str = DEFAULT_NETWORK

    @field_validator("amount")
    @classmethod
    def _amount(cls, v):
        return validate_amount(v)

    @field_validator("network_id")
    @classmethod
    def _network(cls, v):
        return validate_network_id(v)

    @model_validator(mode="after")
    def _recipient_matches_network(self):
        # Unknown networks carry no address format to check against
        profile = get_network(self.network_id)
        if profile is not None and not profile.is_valid_address(self.recipient):
            raise ValueError(f"recipient is not a valid {profile.name} address")
        return self


class IssueSignalRequest(BaseModel):
    transaction_id: str
    network_id: Optional[str] = None

    @field_validator("transaction_id")
    @classmethod
    def _tx(cls, v):
        return validate_transaction_id(v)

    @field_validator("network_id")
    @classmethod
    def _network(cls, v):
        return validate_network_id(v) if v is not None else None


class RefreshRequest(BaseModel):
    network_id: Optional[str] = None

    @field_validator("network_id")
    @classmethod
    def _network(cls, v):
        return validate_network_id(v) if v is not None else None


class ValidateRequest(BaseModel):
    transaction_id: str
    # Not format-checked here: a malformed code or timestamp is a denial, not a bad request
    code: str
    issued_at: str

    @field_validator("transaction_id")
    @classmethod
    def _tx(cls, v):
        return validate_transaction_id(v)


class ConfirmationRequest(BaseModel):
    transaction_id: str
    confirmed: bool = True
    block_number: Optional[int] = Field(default=None, ge=0)

    @field_validator("transaction_id")
    @classmethod
    def _tx(cls, v):
        return validate_transaction_id(v)
