"""
请求数据模型（使用 Pydantic 进行验证）
保持简洁清爽，不过度复杂
"""
from datetime import datetime
from typing import List, Optional
from pydantic import BaseModel, Field, validator

from .utils import clean_name


class RatingInput(BaseModel):
    """单个类别的评分"""
    category_id: int
    stars: int = Field(..., ge=1, le=5, description="星级（1-5）")


class VoteInput(BaseModel):
    """完整投票"""
    group_id: int
    ratings: List[RatingInput] = Field(..., min_length=1)


class AutoSaveInput(BaseModel):
    """即时保存单个评分"""
    group_id: int
    category_id: int
    stars: int = Field(..., ge=1, le=5)


class CategoryInput(BaseModel):
    """评分类别"""
    name: str = Field(..., min_length=1, max_length=50)
    description: Optional[str] = Field(None, max_length=200)

    @validator('name')
    def clean_category_name(cls, v):
        cleaned = clean_name(v)
        if not cleaned:
            raise ValueError('类别名称不能为空')
        return cleaned


class EventInput(BaseModel):
    """新建活动"""
    name: str = Field(..., min_length=1, max_length=100)
    categories: List[CategoryInput] = Field(..., min_length=1)
    submission_deadline: Optional[datetime] = None

    @validator('name')
    def clean_event_name(cls, v):
        """清理活动名称"""
        cleaned = v.strip()
        if not cleaned:
            raise ValueError('活动名称不能为空')
        return cleaned


class CategoriesInput(BaseModel):
    categories: List[CategoryInput] = Field(..., min_length=1)


class GroupInput(BaseModel):
    """组别输入模型"""
    name: str = Field(..., min_length=1, max_length=50)

    @validator('name')
    def clean_group_name(cls, v):
        """清理组别名称"""
        cleaned = clean_name(v)
        if not cleaned:
            raise ValueError('组别名称不能为空')
        return cleaned


class SessionInput(BaseModel):
    """匿名投票者加入"""
    display_name: str = Field(..., min_length=1, max_length=50)

    @validator('display_name')
    def clean_display_name(cls, v):
        cleaned = clean_name(v)
        if not cleaned:
            raise ValueError('显示名不能为空')
        return cleaned


class TimerInput(BaseModel):
    minutes: int = Field(..., gt=0, le=24 * 60, description="计时时长（分钟）")


class RevealInput(BaseModel):
    step: int = Field(..., ge=0)


class CurrentPresentationInput(BaseModel):
    group_id: Optional[int] = None


class OrderInput(BaseModel):
    """发表顺序（组 id 列表）"""
    order: List[int]

    @validator('order')
    def unique_groups(cls, v):
        if len(set(v)) != len(v):
            raise ValueError('发表顺序中有重复的组')
        return v


class ProgressResponse(BaseModel):
    """进度响应模型"""
    current_presentation_id: Optional[int] = None
    votes: int = Field(..., ge=0)
    potential_voters: int = Field(..., ge=0)
    progress: float = Field(..., ge=0, le=100)
