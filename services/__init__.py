"""
服務層

這個 package 包含純計算邏輯與小工具，不負責狀態轉換：
- PinService：遊戲 PIN 產生
- PayoutService：每回合輸贏金額
- StateService：state_version 與事件紀錄
- NotificationService：變更通知
- HistoryService：玩家結算紀錄
"""
