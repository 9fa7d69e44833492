"""API request/response schemas for the try-on endpoint."""

from pydantic import AliasChoices, BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel


class GarmentIn(BaseModel):
    image_url: str = Field(validation_alias=AliasChoices("imageUrl", "image_url"))
    category: str | None = None


class TryOnRequest(BaseModel):
    user_photo_base64: str | None = Field(
        default=None, validation_alias=AliasChoices("userPhotoBase64", "user_photo_base64")
    )
    garment_image_url: str | None = Field(
        default=None, validation_alias=AliasChoices("garmentImageUrl", "productImageUrl")
    )
    garment_category: str | None = Field(
        default=None, validation_alias=AliasChoices("garmentCategory", "productCategory")
    )
    garments: list[GarmentIn] | None = None


class TryOnStep(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    slot: str
    task_id: str
    result_image_url: str


class TryOnResponse(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    result_image_url: str
    task_id: str
    steps: list[TryOnStep]
