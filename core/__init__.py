"""
核心業務邏輯層

這個 package 包含所有核心業務邏輯，包括：
- 狀態機：集中管理 Game 的狀態轉換
- Store：注入給 Manager 的資料存取物件
- Manager：管理 Game 和 Round 的生命週期（開始、掃描、結算、換回合）
- Locks：並發控制工具
"""
